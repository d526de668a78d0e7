"""MML/MIDI to MP3 conversion: compile, synthesize, encode."""
