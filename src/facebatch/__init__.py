"""
facebatch - resilient batch access to a cloud face-recognition service.

Retry executor and bounded-concurrency batch dispatcher for detect / identify /
enrol / train calls, plus a thin HTTP client and folder-enrolment workflows.
"""

__version__ = "0.1.0"
