"""
Usage reporting for the routing service
"""

from localcanary.utils.analytics.usage import UsageCounter, UsageSetCounter

# number of admitted invocations per function
admitted = UsageSetCounter("routing:admitted")

# number of throttled invocation attempts per function
throttled = UsageSetCounter("routing:throttled")

# number of alias resolutions that selected the primary version, per function
primary_selected = UsageSetCounter("routing:primary_selected")

# number of alias resolutions that selected the secondary (canary) version, per function
secondary_selected = UsageSetCounter("routing:secondary_selected")

# number of invocations that ran through the routing service
invocations = UsageCounter("routing:invocations")
