"""giveaways package.

Campaign lifecycle and reward distribution jobs. Keep __init__ light; the job
entry points live in giveaways.jobs.
"""
