"""Desktop side: transport selection, tunnel supervision, host session and sinks."""
