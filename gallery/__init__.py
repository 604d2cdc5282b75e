"""Drive GIF gallery: list Drive GIFs, convert them to MP4 and serve a gallery."""
