"""Calibre shelf: web backend for a personal Calibre e-book library."""
