"""HTTP surface: protected image delivery and the watermark admin router."""
