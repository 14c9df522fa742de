"""Phone side: motion filtering, gesture recognition and the client session."""
