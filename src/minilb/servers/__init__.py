"""DNS query handling and the UDP listener."""
