"""Real-time voice conversation engine: mic capture, STT, turn loop, TTS playback."""
