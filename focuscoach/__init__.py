"""
FocusCoach

Turns per-frame face and gaze measurements into a session-long focus score
and decides when to speak a graduated voice nudge to a distracted user.
"""

__version__ = "1.0.0"
__author__ = "FocusCoach Team"
__description__ = "Focus scoring and voice coaching from face and gaze detections"
