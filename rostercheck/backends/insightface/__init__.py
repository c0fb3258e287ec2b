"""InsightFace backend.

Components:
- SCRFDDetector: fast face detection with the SCRFD ONNX model
  (rostercheck.backends.insightface.detector; imports insightface)
"""
