"""Telephony-leg primitives: G.711 mu-law, 8/16 kHz rate conversion and the
Twilio Media Streams wire format.

Everything here is stateless apart from the streaming downsampler.
"""
