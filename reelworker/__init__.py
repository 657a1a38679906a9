"""reelworker — turns a product image into a short narrated video."""
