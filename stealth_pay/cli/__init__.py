"""
StealthPay - CLI Package
"""
