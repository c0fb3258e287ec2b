"""Engine backends and the pipeline factory.

This package contains the concrete engines:
- insightface: SCRFD fast detector (ONNX via onnxruntime)
- dlib: 68-point landmarks + ResNet 128-D descriptors, and the Euclidean matcher

Use rostercheck.backends.factory.create_pipeline() to wire the components.
"""
