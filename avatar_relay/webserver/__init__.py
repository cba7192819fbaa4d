"""Avatar Relay Web Server Module"""

from avatar_relay.webserver.http_server import WebServer
from avatar_relay.webserver.state_manager import StateManager
from avatar_relay.webserver.websocket_handler import HostSocketHandler

__all__ = ['WebServer', 'StateManager', 'HostSocketHandler']
