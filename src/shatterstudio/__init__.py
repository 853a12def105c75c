"""
Shatter Studio: nearest-seed mesh fragmentation and synthetic YOLO datasets.
"""
