"""
DreamBoat Worker

Background worker that turns queued jobs into generated images.
"""
