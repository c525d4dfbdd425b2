"""File walking, time and version-string, list and progress-display helpers."""