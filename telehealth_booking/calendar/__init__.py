"""Google Calendar gateway and event metadata."""
