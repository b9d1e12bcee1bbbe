#!/usr/bin/env python3
"""
Compliance Lifecycle Engine - Entry Point

Turns business events (registrations, payroll runs, period ends) into
dated compliance tasks, tracks them through their lifecycle, detects
compliance risks and recommends plan upgrades.

Usage:
    python main.py rules --entity private_limited
    python main.py resolve --event month_end --entity private_limited --date 2024-01-31
    python main.py simulate --event employee_count_threshold --entity llp -p employeeCount=25
    python main.py eligibility --employees 25 --entity private_limited --turnover 6000000
    python main.py risk gstr --gstr1 1000000 --gstr3b 880000 --export-json risk.json
"""

from cla_engine.cli import main

if __name__ == "__main__":
    main()
