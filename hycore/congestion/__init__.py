"""Congestion control: a pacer, the Brutal sender and BBR bandwidth-sampling components."""