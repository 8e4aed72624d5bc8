#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

class SwitcherError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class SwitcherConnectionError(SwitcherError):
  """Raised when the TCP command channel to a device cannot be opened, or is lost."""
  address: str
  port: int

  def __init__(self, address: str, port: int, msg: str | None = None):
    if msg is None:
      msg = (f"connection error: failed to connect to switcher on {address}:{port}. "
             "please make sure it is turned on and available.")
    super().__init__(msg)
    self.address = address
    self.port = port

class SwitcherListenerError(SwitcherError):
  """Raised when the UDP broadcast listener cannot be bound, or fails while receiving."""
  pass

class SwitcherLoginError(SwitcherError):
  """Raised when the login exchange fails or does not yield a session token."""
  pass

class SwitcherFrameError(SwitcherError):
  """Raised when a reply frame is too short to be decoded."""
  pass

class SwitcherTimeoutError(SwitcherError):
  """Raised when a device does not reply within the command deadline."""
  pass

class SwitcherConfigError(SwitcherError):
  """Raised for malformed configuration values."""
  pass
