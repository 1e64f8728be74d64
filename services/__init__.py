"""
Services package for the Attention Session Client.

This package contains the modules that talk to the session coordinator and
turn its instructions into playback:
- session_api: HTTP client for the coordinator / attention scorer endpoints
- instructions: Typed parsing of coordinator responses
- instruction_poller: Fixed-rate, single-flight "what next" polling
- playback_sequencer: Voice prompts, stimulus video and fullscreen
"""
