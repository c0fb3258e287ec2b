"""dlib backend.

Components:
- DlibRecognizer: HOG/CNN detection, 68-point landmarks, 128-D ResNet descriptors
  (rostercheck.backends.dlib.recognizer; imports dlib)
- DescriptorMatcher / build_matcher: Euclidean nearest-neighbor matching
"""

from rostercheck.backends.dlib.matcher import DescriptorMatcher, build_matcher

__all__ = [
    "DescriptorMatcher",
    "build_matcher",
]
