'''Register level configuration of the Si5351 clock synthesizer.'''
