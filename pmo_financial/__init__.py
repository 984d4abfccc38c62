"""
PMO Financial - budgets, earned value, cash flow and quality services
"""

__version__ = '0.1.0'
