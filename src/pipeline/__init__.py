"""
Background Removal Pipeline

Stages:
1. Admission - bounded concurrency via AdmissionGate
2. Preprocessing - orientation, bounds, contrast normalization
3. Segmentation - rembg (or the simulated backend)
4. Alpha refinement - linear -> threshold -> blur, then PNG encode
"""
