"""Hardware detection, mode resolution and eGPU removal."""
