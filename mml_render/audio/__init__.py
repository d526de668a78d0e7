"""Audio stages of the conversion pipeline.

- synth: MIDI -> 16-bit stereo WAV, streamed in fixed 4096-frame blocks
  through a SoundFont engine (FluidSynth via pyfluidsynth)
- encode: WAV -> MP3 in 1152-sample frames (LAME via lameenc)
- wav: the intermediate WAV container
"""
