# chatuniverse/__init__.py
# ChatUniverse: real-time group chat server (presence, broadcast and spam protection over WebSockets).

__version__ = "1.0.0"
