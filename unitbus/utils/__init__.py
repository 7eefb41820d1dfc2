from .systemd_detect import has_systemd

__all__ = ["has_systemd"]
