"""Launch Pipeline - drives media batches from upload to live ads."""

__version__ = "0.1.0"
