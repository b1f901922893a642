"""
Speech synthesis forwarding.

Receives SSML documents on ``POST /cognitiveservices/v1``, forwards them to the
configured speech provider with the subscription key attached, and relays the
synthesized audio (or the provider's error) back to the caller.
"""
