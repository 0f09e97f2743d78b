"""Container readers: Canon raw previews, Photoshop layers, Pillow rasters."""
