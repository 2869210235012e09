"""
DreamBoat API

Backend for the DreamBoat profile photo generator.
"""
