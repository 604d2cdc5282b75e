"""Drive, conversion and catalog services behind the gallery."""
