"""ChannelKit: messaging-channel onboarding for LINE, WhatsApp, Instagram and Facebook."""

__version__ = "1.0.0"
