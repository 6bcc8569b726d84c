"""Capability adapters: speech recognition, synthesis, microphone and playback."""
