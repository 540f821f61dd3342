"""
API routes package

Router modules:
- health: health check
- balance: balance state, deposit, withdraw, refund, transfer, history
- payments: payment intents for the deposit form
"""
