"""wallter - cache, fit and rotate desktop wallpapers."""
