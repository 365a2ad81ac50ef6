"""Google specific credential helpers.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""
