"""
SQL used against the occurrence database.

Plain statements for query(); values are bound by name. Table and column
names match the normalized tables: location, event, occurrence.
"""

# Every occurrence recorded during one sampling event
OCCURRENCES_IN_EVENT = "SELECT * FROM occurrence WHERE eventID = :event_id"

# Species seen in either of two events, without repeats
SPECIES_IN_EVENTS = (
    "SELECT DISTINCT scientificName FROM occurrence "
    "WHERE eventID IN (:first_event, :second_event)"
)

# How often each species was observed, most frequent first
SPECIES_COUNTS = (
    "SELECT scientificName, COUNT(*) AS observations "
    "FROM occurrence GROUP BY scientificName ORDER BY COUNT(*) DESC"
)

# Observations of one species within one location
SPECIES_AT_LOCATION = (
    "SELECT COUNT(*) AS observations FROM occurrence "
    "INNER JOIN event ON occurrence.eventID = event.eventID "
    "WHERE occurrence.scientificName = :scientific_name "
    "AND event.locationID = :location_id"
)

# Coordinates of every event where a species occurred
SPECIES_POINTS = (
    "SELECT event.eventID, event.decimalLatitude, event.decimalLongitude "
    "FROM event INNER JOIN occurrence ON event.eventID = occurrence.eventID "
    "WHERE occurrence.scientificName = :scientific_name"
)

# Scientific name recorded for one catalog number
NAME_BY_CATALOG_NUMBER = (
    "SELECT scientificName FROM occurrence WHERE catalogNumber = :catalog_number"
)
