"""port-usage: live CPU and memory readout for whatever is listening on a TCP port."""
