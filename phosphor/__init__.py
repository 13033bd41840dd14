"""
Phosphor - guided RFID/NFC card cloning on top of the Proxmark3 client.
"""

__version__ = "0.4.0"
