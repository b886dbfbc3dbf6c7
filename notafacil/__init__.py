"""
NotaFácil - Invoice Management Core

Keeps a signed-in user's invoices in sync with the backing store and
lets both the UI and a Gemini chatbot change them optimistically.

DESIGN PRINCIPLES:
1. The local collection updates first; the store confirms later
2. A rejected write is rolled back and reported, never hidden
3. The chatbot acts through the same path as a UI click
4. Every mutation outcome is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "NotaFácil Team"
