"""Camera side: capture, JPEG encoding and the stop-and-wait sender."""
