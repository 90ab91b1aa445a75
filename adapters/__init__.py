"""
Adapters: Chrome DevTools Protocol wrappers.

cdp.py owns the WebSocket session and target discovery; page.py drives one
page through load and print. Adapters raise PresseError and never import
from tools/.
"""
