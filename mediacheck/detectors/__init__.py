from mediacheck.detectors.audio import perform_advanced_audio_analysis
from mediacheck.detectors.image import perform_advanced_image_analysis
from mediacheck.detectors.video import perform_advanced_video_analysis, perform_simple_video_analysis

__all__ = [
    "perform_advanced_audio_analysis",
    "perform_advanced_image_analysis",
    "perform_advanced_video_analysis",
    "perform_simple_video_analysis",
]
