"""Controller side: decoding, buffering and display of received frames."""
