"""SSML text-to-speech forwarding proxy."""
