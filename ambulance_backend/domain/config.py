# Simulation Configuration

# Clock
TICK_SECONDS = 0.5          # Simulated seconds advanced per tick
DEFAULT_SEED = 42

# Preemption Timings
CLEARANCE_DELAY = 3.0       # Smart mode: GREEN held after the ambulance passes
WAIT_DELAY = 5.0            # Normal mode: ambulance held at RED before GREEN
RELEASE_DELAY = 5.0         # Normal mode: GREEN kept after the ambulance is released

# Proximity
PROXIMITY_THRESHOLD = 50.0      # Normal mode stop trigger (meters)
ROUTE_SIGNAL_THRESHOLD = 50.0   # Max distance from route polyline for a signal to be on route
BEHIND_TOLERANCE = 5            # Waypoints a signal may lag behind and still trigger a stop
REGISTRY_PADDING = 300.0        # Bounding box padding for signal registry lookups (meters)

# Background Signal Cycle
GREEN_TIME = 15.0
YELLOW_TIME = 3.0
RED_TIME = 15.0             # All-red interval of a lone signal
ALL_RED_CLEAR = 2.0         # All-red interval between approaches of one intersection

# Vehicles
AMBULANCE_SPEED = 20.0      # meters / second
CIVILIAN_SPEED = 8.0
CIVILIAN_COUNT = 6
PULL_OVER_DISTANCE = 120.0  # Civilians yield when an active ambulance is this close
CIVILIAN_STOP_DISTANCE = 30.0
PULL_OVER_OFFSET = 4.0      # Lateral shift of a pulled over vehicle (meters)

# Grid Settings
GRID_SIZE = 5
INTERSECTION_SPACING = 200.0
GRID_ORIGIN = (12.9346, 77.6180)  # (lat, lng) of the south-west corner in geographic runs

# Event Log
EVENT_LOG_SIZE = 200

# Geodesy
EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = 111320.0
