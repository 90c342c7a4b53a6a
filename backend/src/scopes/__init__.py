"""Video scope reductions: histogram, waveform/parade, vectorscope."""
