"""Building blocks of the BBR bandwidth estimator and its bandwidth sampler."""